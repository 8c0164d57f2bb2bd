"""CV form vs. PDF content validation service."""
