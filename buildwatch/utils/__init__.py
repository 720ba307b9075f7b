"""
buildwatch utilities: logging setup and credential redaction.
"""
