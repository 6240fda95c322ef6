"""API core: configuration, logging, store wiring and dependencies"""
