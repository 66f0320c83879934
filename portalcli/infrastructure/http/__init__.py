"""HTTP adapters: the request pipeline and wire-level query encoding."""
