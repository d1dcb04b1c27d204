from .reader import SourceReadError, TabularSource, fetch_google_sheet, read_csv_file

__all__ = ["SourceReadError", "TabularSource", "fetch_google_sheet", "read_csv_file"]
