"""
Tryout Engine: timed assessment sessions, scoring and rankings.
"""
