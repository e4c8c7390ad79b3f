"""SessionGate: registration, sign-in, and session lifecycle service."""
