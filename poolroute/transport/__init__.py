"""HTTP surface of the route calendar and the dispatch admin routes."""
