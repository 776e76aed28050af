"""FSM states for the simulation flow."""
from aiogram.fsm.state import State, StatesGroup


class SimuladoStates(StatesGroup):
    """States mirroring QuizSession.status."""

    loading = State()     # Waiting for the simulation JSON (text or file)
    reviewing = State()   # Answering / navigating questions
    results = State()     # Finished; result shown
