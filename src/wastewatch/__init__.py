"""WasteWatch: municipal waste reporting and pickup scheduling API."""
