"""
Tournament Core - lifecycle, bracket and match progression engine

Responsibilities:
- Tournament state machine (draft, open, in progress, paused, completed, cancelled)
- Participant registration with capacity, deadline and approval control
- Bracket generation (single/double elimination, round robin, Swiss)
- Match result recording and winner/loser propagation
- Standings, leaderboards and tournament statistics
"""
