"""Roster import parsing (pasted text, CSV/TSV, .xlsx)."""
