"""web/ -- Server-rendered registration and activation pages."""
