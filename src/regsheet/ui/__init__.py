"""Review API server and the shared service layer behind it."""
