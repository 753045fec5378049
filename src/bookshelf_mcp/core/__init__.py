"""Session actor core: state, persistence and the actor itself"""
