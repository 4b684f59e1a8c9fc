import numpy as np
import pandas as pd
import pytest

from regime_rotation.models import (
    InternalNode, LeafNode, RandomForest,
    compute_feature_importance, count_leaves, gini_impurity, load_model,
    majority_class, n_split_features, predict_forest, predict_frame,
    predict_tree, save_model, train_decision_tree, train_random_forest,
    tree_depth,
)


def _stump():
    """x <= 1.0 -> class 2, else class 1; fallback 3."""
    return InternalNode(feature="x", threshold=1.0, fallback=3,
                        left=LeafNode(2), right=LeafNode(1))


class TestImpurity:
    def test_empty_is_one(self):
        assert gini_impurity(np.array([], dtype=int)) == 1.0

    def test_pure_is_zero(self):
        assert gini_impurity(np.array([2, 2, 2])) == 0.0

    def test_uniform_four_classes(self):
        assert gini_impurity(np.array([0, 1, 2, 3])) == pytest.approx(0.75)

    def test_majority_ties_go_to_lowest_class(self):
        assert majority_class(np.array([3, 1, 3, 1])) == 1

    def test_split_feature_count(self):
        assert n_split_features(21) == 5
        assert n_split_features(2) == 2
        assert n_split_features(1) == 1


class TestDecisionTree:
    def test_small_node_is_leaf(self):
        X = np.arange(10, dtype=float).reshape(-1, 1)
        y = np.array([0] * 4 + [1] * 6)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0))
        assert node == LeafNode(1)

    def test_max_depth_zero_is_leaf(self):
        X = np.arange(40, dtype=float).reshape(-1, 1)
        y = (X[:, 0] > 20).astype(int)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0), max_depth=0)
        assert isinstance(node, LeafNode)

    def test_splits_on_quartile_cut(self):
        """Labels change at the median, so the median cut wins"""
        X = np.arange(40, dtype=float).reshape(-1, 1)
        y = (X[:, 0] > 20).astype(int)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0))
        assert isinstance(node, InternalNode)
        assert node.feature == "x"
        assert node.threshold == 20.0
        assert node.fallback == 0
        assert predict_tree(node, {"x": 3.0}) == 0
        assert predict_tree(node, {"x": 35.0}) == 1

    def test_constant_feature_gives_leaf(self):
        X = np.ones((30, 1))
        y = np.array([0, 1] * 15)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0))
        assert node == LeafNode(0)

    def test_all_null_feature_gives_leaf(self):
        X = np.full((30, 1), np.nan)
        y = np.array([2] * 30)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0))
        assert node == LeafNode(2)

    def test_min_leaf_respected(self):
        X = np.arange(60, dtype=float).reshape(-1, 1)
        y = np.array([0] * 3 + [1] * 57)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0), min_samples_leaf=5)

        def leaves_ok(n, Xn):
            if isinstance(n, LeafNode):
                return len(Xn) >= 5
            col = Xn[:, 0]
            return leaves_ok(n.left, Xn[col <= n.threshold]) and leaves_ok(n.right, Xn[col > n.threshold])

        assert leaves_ok(node, X)

    def test_null_rows_go_to_neither_child(self):
        """Rows missing the split feature only count toward the node's fallback"""
        X = np.concatenate([np.arange(30, dtype=float), np.full(10, np.nan)]).reshape(-1, 1)
        y = np.array([0] * 15 + [1] * 15 + [3] * 10)
        node = train_decision_tree(X, y, ["x"], np.random.default_rng(0))

        assert isinstance(node, InternalNode)
        assert node.threshold == 15.0
        assert node.fallback == 0
        col = X[:, 0]
        assert (col <= node.threshold).sum() + (col > node.threshold).sum() < len(y)

        def leaf_classes(n):
            if isinstance(n, LeafNode):
                return {n.prediction}
            return leaf_classes(n.left) | leaf_classes(n.right)

        assert 3 not in leaf_classes(node)
        assert predict_tree(node, {"x": np.nan}) == 0


class TestForestTraining:
    def test_scenario_separable_training_accuracy(self, separable_data):
        """Perfectly separable 200 rows reach >= 95% training accuracy"""
        X, y, names = separable_data
        forest = train_random_forest(X, y, names, n_trees=25, rng=np.random.default_rng(1))
        frame = pd.DataFrame(X, columns=names)
        predicted = predict_frame(forest, frame).argmax(axis=1)
        assert (predicted == y).mean() >= 0.95

    def test_forest_shape(self, separable_data):
        X, y, names = separable_data
        forest = train_random_forest(X, y, names, n_trees=7, rng=np.random.default_rng(1))
        assert forest.n_trees == 7
        assert forest.feature_names == names
        assert all(tree_depth(t) <= 12 for t in forest.trees)
        assert all(count_leaves(t) >= 1 for t in forest.trees)

    def test_seeded_training_is_reproducible(self, separable_data):
        X, y, names = separable_data
        a = train_random_forest(X, y, names, n_trees=5, rng=np.random.default_rng(9))
        b = train_random_forest(X, y, names, n_trees=5, rng=np.random.default_rng(9))
        assert a.trees == b.trees

    def test_dataframe_input_with_text_cells(self):
        df = pd.DataFrame({"x": [str(i) for i in range(30)] + ["n/a"] * 10})
        y = np.array([0] * 20 + [1] * 20)
        forest = train_random_forest(df, y, ["x"], n_trees=3, rng=np.random.default_rng(0))
        assert forest.n_trees == 3


class TestPrediction:
    def test_tree_routes_by_threshold(self):
        assert predict_tree(_stump(), {"x": 1.0}) == 2
        assert predict_tree(_stump(), {"x": 1.5}) == 1

    @pytest.mark.parametrize("value", [None, np.nan, "abc"])
    def test_missing_value_returns_fallback(self, value):
        assert predict_tree(_stump(), {"x": value}) == 3

    def test_absent_feature_returns_fallback(self):
        assert predict_tree(_stump(), {}) == 3

    def test_probabilities_sum_to_one(self, separable_data):
        X, y, names = separable_data
        forest = train_random_forest(X, y, names, n_trees=10, rng=np.random.default_rng(2))
        for row in pd.DataFrame(X[:20], columns=names).to_dict("records"):
            proba = predict_forest(forest, row)
            assert proba.shape == (4,)
            assert proba.sum() == pytest.approx(1.0)

    def test_prediction_is_idempotent(self, separable_data):
        X, y, names = separable_data
        forest = train_random_forest(X, y, names, n_trees=10, rng=np.random.default_rng(2))
        row = {"a": 0.3, "b": -1.2}
        np.testing.assert_array_equal(predict_forest(forest, row), predict_forest(forest, row))

    def test_vote_shares(self):
        forest = RandomForest(trees=[LeafNode(0), LeafNode(0), LeafNode(2), _stump()],
                              feature_names=["x"])
        np.testing.assert_allclose(predict_forest(forest, {"x": 5.0}), [0.5, 0.25, 0.25, 0.0])

    def test_predict_frame_empty(self):
        forest = RandomForest(trees=[LeafNode(1)], feature_names=["x"])
        assert predict_frame(forest, pd.DataFrame({"x": []})).shape == (0, 4)

    def test_predict_frame_coerces_text_cells(self):
        """Numeric text routes like the number, other text takes the fallback"""
        forest = RandomForest(trees=[_stump()], feature_names=["x"])
        proba = predict_frame(forest, pd.DataFrame({"x": ["0.5", "abc"]}))
        assert proba.argmax(axis=1).tolist() == [2, 3]


class TestFeatureImportance:
    def test_depth_weighting(self):
        tree = InternalNode("x", 0.0, 0, left=InternalNode("y", 1.0, 0, LeafNode(0), LeafNode(1)),
                            right=LeafNode(2))
        forest = RandomForest(trees=[tree], feature_names=["x", "y", "z"])
        imp = compute_feature_importance(forest)
        assert list(imp["feature"]) == ["x", "y", "z"]
        assert imp["importance"].tolist() == pytest.approx([100 / 1.5, 50 / 1.5, 0.0])

    def test_sums_to_100_and_lists_every_feature(self, separable_data):
        X, y, names = separable_data
        forest = train_random_forest(X, y, names, n_trees=10, rng=np.random.default_rng(4))
        imp = compute_feature_importance(forest)
        assert sorted(imp["feature"]) == sorted(names)
        assert imp["importance"].sum() == pytest.approx(100.0)
        assert imp["importance"].is_monotonic_decreasing

    def test_leaf_only_forest_is_all_zero(self):
        forest = RandomForest(trees=[LeafNode(0)], feature_names=["a", "b"])
        imp = compute_feature_importance(forest)
        assert list(imp["feature"]) == ["a", "b"]
        assert (imp["importance"] == 0).all()


class TestPersistence:
    def test_save_and_load(self, tmp_path):
        forest = RandomForest(trees=[_stump()], feature_names=["x"])
        path = save_model(forest, tmp_path / "models", "rf")
        assert path.exists()
        loaded = load_model(tmp_path / "models", "rf")
        assert loaded.trees == forest.trees
