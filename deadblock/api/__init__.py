"""HTTP API exposing matchmaking and rematch operations"""
