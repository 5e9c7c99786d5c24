"""Spreadsheet access (pandas / openpyxl)."""
