"""
SOL / lamport conversion helpers
"""

# Number of lamports in one SOL
LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL"""
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(sol: float) -> int:
    """Convert SOL to lamports, rounded to the nearest lamport"""
    return int(round(sol * LAMPORTS_PER_SOL))
