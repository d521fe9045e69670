from userhub.models.user import User, team_members

__all__ = ["User", "team_members"]
