"""Ranking de desejabilidade de uma instância para quem vai entrar nela.

Instâncias quase cheias (mas ainda com vaga) ficam no topo: são as que
mais provavelmente reaparecem na próxima página antes de lotar e sumir
da listagem.
"""

from __future__ import annotations

MAX_PRIORITY: int = 5
MIN_PRIORITY: int = 1


def compute_priority(players: int, capacity: int) -> int:
    """Calcula a prioridade (1..5) a partir de jogadores e capacidade.

    Ordem estrita, a primeira regra que casar vence:
    - 5: resta exatamente uma vaga
    - 4: restam exatamente duas vagas
    - 3: mais da metade ocupada
    - 2: ao menos um jogador
    - 1: instância vazia
    """
    free_slots = capacity - players
    if free_slots == 1:
        return 5
    if free_slots == 2:
        return 4
    if players > capacity / 2:
        return 3
    if players > 0:
        return 2
    return MIN_PRIORITY
