from dataclasses import fields

import numpy as np
import pytest

from DataModel import Board, Card, Move, cell_site, column_site
from Features import FeatureExtractor, HeuristicParams, rank_moves, score_board

SAMPLE_DEAL = "zzg5mmg2b6r8llg1b4r6g3mmg7r7r5b1ffr2b2mmb8g4ffr9r3g9r1b7b5r4g8ffzzb3zzb9zzffg6mm"


def test_feature_vector_matches_weights():
    vector = FeatureExtractor.extract(Board.from_deal(SAMPLE_DEAL))
    assert vector.dtype == np.float32
    assert vector.shape == (len(fields(HeuristicParams)),)
    assert vector.shape == HeuristicParams().as_vector().shape


def test_empty_board_features():
    vector = FeatureExtractor.extract(Board.empty())
    # collected, bonus, locked, free cells, empty columns, runs, depth, exposed specials
    np.testing.assert_allclose(vector, [0, 0, 0, 1, 1, 0, 0, 0])


def test_next_card_depths():
    board = Board.empty()
    board.columns[0] += [Card.number(0, 1), Card.number(1, 5), Card.number(2, 5)]
    board.columns[1] += [Card.number(1, 1)]
    board.cells[0] = Card.number(2, 1)
    np.testing.assert_array_equal(FeatureExtractor.next_card_depths(board), [2, 0, 0])
    np.testing.assert_array_equal(FeatureExtractor.column_heights(board), [3, 1, 0, 0, 0, 0, 0, 0])


def test_params_round_trip_and_validation():
    params = HeuristicParams(collected_weight=1.5)
    assert HeuristicParams.from_dict(params.to_dict()) == params
    with pytest.raises(ValueError):
        HeuristicParams.from_dict({"bogus": 1.0})


def test_score_prefers_collected_cards():
    params = HeuristicParams()
    board = Board.empty()
    better = Board.empty()
    better.foundations = [1, 0, 0]
    assert score_board(better, params) > score_board(board, params)


def test_rank_moves_puts_uncovering_move_first():
    board = Board.empty()
    board.columns[0] += [Card.number(0, 1), Card.number(1, 5)]
    board.columns[1] += [Card.number(2, 7)]
    before = board.copy()
    candidates = [Move(column_site(1, 1), column_site(idx)) for idx in range(2, 8)]
    candidates += [Move(column_site(1, 1), cell_site(idx)) for idx in range(3)]
    candidates += [Move(column_site(0, 2), column_site(idx)) for idx in range(2, 8)]
    candidates += [Move(column_site(0, 2), cell_site(idx)) for idx in range(3)]

    ranked = rank_moves(board, candidates, HeuristicParams())
    assert len(ranked) == len(candidates)
    assert set(ranked) == set(candidates)
    assert ranked[0].src == column_site(0, 2)
    assert board == before


def test_rank_moves_keeps_order_on_ties():
    board = Board.empty()
    board.columns[0] += [Card.number(0, 5)]
    candidates = [Move(column_site(0, 1), column_site(idx)) for idx in range(1, 8)]
    assert rank_moves(board, candidates, HeuristicParams()) == candidates
    assert rank_moves(board, candidates[:1], HeuristicParams()) == candidates[:1]
