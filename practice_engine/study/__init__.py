"""Study: spaced repetition and session orchestration."""
