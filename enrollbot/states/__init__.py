from enrollbot.states.enrollment_states import PersonalInfoStates, AdminSeedStates

__all__ = ["PersonalInfoStates", "AdminSeedStates"]
