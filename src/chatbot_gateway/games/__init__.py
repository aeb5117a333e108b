from .base import GameRecord, GameRepository, GameSessionEngine, LeaveResult, LinkRecord, SessionGameRepository
from .hangman import HangmanCommand
from .rps import RockPaperScissorsCommand

__all__ = [
    "GameRecord",
    "GameRepository",
    "GameSessionEngine",
    "LeaveResult",
    "LinkRecord",
    "SessionGameRepository",
    "HangmanCommand",
    "RockPaperScissorsCommand",
]
