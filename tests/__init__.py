"""DocVault test suite."""
