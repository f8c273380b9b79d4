"""Small helpers shared across chainmirror packages."""
