"""dsconfig Database — SQLAlchemy engine construction for diagnostics."""
