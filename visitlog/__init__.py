"""visitlog — visitor session tracking and audit pipeline for the portfolio site."""
