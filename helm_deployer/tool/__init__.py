"""Command line tool for deploying helm releases."""
