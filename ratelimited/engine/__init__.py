"""Key derivation, policy resolution, retries and the call gate."""
