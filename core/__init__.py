"""core/ -- Configuration and pure helpers. Imports nothing from the other packages."""
