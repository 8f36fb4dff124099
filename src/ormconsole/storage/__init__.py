"""Engine, session and model generation for console storage."""
