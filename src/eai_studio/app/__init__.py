"""HTTP host for the studio front-end."""
