"""
Match status verification.
Derives a trustworthy status for every match from the upstream hint, the
kickoff time and the published result, and flags upstream data-quality
problems without overriding that status.
"""
