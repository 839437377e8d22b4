"""
Skyrapport Test Suite

Unit tests for the rate limiter, API client, sync stages, local stores and
analytics, all run against scripted responses (no live network).

Test organization:
- unit/ - Unit tests for individual components
- fixtures/ - Payload factories, fake HTTP session and fake clock
"""
