"""Game domain services: phases, rounds, scoring, teams and timers.

Imported by the coordinator; nothing here touches the transport directly.
"""
