"""polymorph - fetch executables on first use and run them from a per-version cache."""
