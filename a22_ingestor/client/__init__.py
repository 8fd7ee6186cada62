"""Client package for the A22 traffic web service."""
