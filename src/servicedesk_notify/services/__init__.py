"""Pipeline stages and the push gateway client."""
