"""SkillSwap — matching and engagement lifecycle engine for peer skill exchange."""

__version__ = "0.1.0"
