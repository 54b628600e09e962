"""
podplay - pod tournament service

Responsibilities:
- Tournament registry (CRUD, slugs, organizer roles)
- Pod registration
- Pool-play scheduling and live scorekeeping
- Standings computed from completed pool matches
- Single-elimination bracket seeded from standings
- Live match events over Redis
"""
