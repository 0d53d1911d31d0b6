"""Session monitoring core: classification, correlation, polling and storage."""
