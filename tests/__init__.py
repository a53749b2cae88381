"""cupertino test suite."""
