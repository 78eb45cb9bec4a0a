"""Risk synthesis and drift severity classification."""
