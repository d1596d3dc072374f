#!/usr/bin/env python3
"""
Tests for chargrad autograd, model, optimizer, trainer, sampler and
session.

Run all tests:
    python -m pytest tests/ -v --tb=short
"""

import math
import random
import sys
import threading
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


TINY = {"n_embd": 4, "n_head": 2, "n_layer": 1, "block_size": 8, "lr": 0.05}


def _tiny_model(docs=("ab", "ba"), seed=0, **overrides):
    from chargrad.config import ModelConfig
    from chargrad.data.vocab import CharVocab
    from chargrad.model.gpt import CharGPT
    config = ModelConfig.from_dict({**TINY, **overrides})
    return CharGPT(config, CharVocab.from_docs(docs), random.Random(seed))


# =============================================================================
# Autograd Tests
# =============================================================================

class TestValue:
    """Tests for the scalar autograd node."""

    def test_primitive_values_and_local_grads(self):
        from chargrad.model.value import Value
        x, y = Value(3.0), Value(-2.0)

        assert x.add(y).data == 1.0
        assert x.add(y).local_grads == (1.0, 1.0)
        assert x.mul(y).data == -6.0
        assert x.mul(y).local_grads == (-2.0, 3.0)
        assert x.pow(2).data == 9.0
        assert x.pow(2).local_grads == (6.0,)
        assert x.log().data == pytest.approx(math.log(3.0))
        assert x.log().local_grads[0] == pytest.approx(1 / 3)
        assert x.exp().local_grads[0] == pytest.approx(math.exp(3.0))
        assert x.relu().data == 3.0 and x.relu().local_grads == (1.0,)
        assert y.relu().data == 0.0 and y.relu().local_grads == (0.0,)

    def test_children_recorded_in_order(self):
        from chargrad.model.value import Value
        a, b = Value(1.0), Value(2.0)
        c = a * b
        assert c.children == (a, b)
        assert a.is_leaf and not c.is_leaf

    def test_backward_matches_finite_differences(self):
        """Graphs of add/mul reproduce numerical gradients."""
        from chargrad.model.value import Value

        def build(vals):
            a, b, c, d = (Value(v) for v in vals)
            e = a * b + c
            f = e * e + a * d      # a is reused: diamond
            g = f * c + b * b * d
            return g, (a, b, c, d)

        rng = random.Random(3)
        point = [rng.uniform(-2, 2) for _ in range(4)]
        out, leaves = build(point)
        out.backward()

        h = 1e-6
        for i, leaf in enumerate(leaves):
            up = list(point)
            down = list(point)
            up[i] += h
            down[i] -= h
            numeric = (build(up)[0].data - build(down)[0].data) / (2 * h)
            assert leaf.grad == pytest.approx(numeric, rel=1e-4, abs=1e-4)

    def test_diamond_graph_visits_node_once(self):
        from chargrad.model.value import Value
        a = Value(3.0)
        out = a * a + a
        out.backward()
        assert a.grad == pytest.approx(2 * 3.0 + 1)
        assert len(out.topological_order()) == 3

    def test_nonlinear_grads(self):
        from chargrad.model.value import Value
        x = Value(0.5)
        out = x.exp().log() + x.pow(3) + x.relu()
        out.backward()
        assert x.grad == pytest.approx(1 + 3 * 0.25 + 1)

    def test_gradients_accumulate_across_backward_calls(self):
        from chargrad.model.value import Value
        a, b = Value(2.0), Value(5.0)
        (a * b).backward()
        (a * b).backward()
        assert a.grad == pytest.approx(10.0)
        assert b.grad == pytest.approx(4.0)

    def test_operator_sugar(self):
        from chargrad.model.value import Value
        a = Value(6.0)
        assert (a - 2).data == 4.0
        assert (10 - a).data == 4.0
        assert (a / 3).data == pytest.approx(2.0)
        assert (3 / a).data == pytest.approx(0.5)
        assert (-a).data == -6.0
        assert (2 * a + 1).data == 13.0

    def test_deep_graph_does_not_recurse(self):
        from chargrad.model.value import Value
        x = Value(1.0)
        acc = Value(0.0)
        for _ in range(5000):
            acc = acc + x
        acc.backward()
        assert x.grad == pytest.approx(5000.0)

    def test_invalid_inputs_propagate_nan_inf(self):
        """log/pow domain errors become IEEE values instead of raising."""
        from chargrad.model.value import Value
        assert Value(0.0).log().data == -math.inf
        assert math.isnan(Value(-1.0).log().data)
        assert Value(0.0).pow(-1).data == math.inf
        assert math.isnan(Value(-2.0).pow(0.5).data)
        assert Value(1000.0).exp().data == math.inf

        out = Value(-1.0).log() * 2 + 1
        assert math.isnan(out.data)

        nan_relu = Value(-1.0).log().relu()
        assert math.isnan(nan_relu.data)
        assert Value(-3.0).relu().data == 0.0


# =============================================================================
# Vector Primitive Tests
# =============================================================================

class TestOps:
    """Tests for linear, softmax and rms_norm."""

    def test_linear(self):
        from chargrad.model.ops import linear
        from chargrad.model.value import Value
        w = [[Value(1.0), Value(2.0)], [Value(-1.0), Value(0.5)], [Value(0.0), Value(3.0)]]
        x = [Value(4.0), Value(2.0)]
        out = linear(x, w)
        assert [o.data for o in out] == [8.0, -3.0, 6.0]

    def test_linear_shape_mismatch(self):
        from chargrad.model.ops import linear
        from chargrad.model.value import Value
        with pytest.raises(ValueError):
            linear([Value(1.0)], [[Value(1.0), Value(2.0)]])

    def test_softmax_sums_to_one(self):
        from chargrad.model.ops import softmax
        from chargrad.model.value import Value
        rng = random.Random(1)
        for _ in range(20):
            logits = [Value(rng.uniform(-30, 30)) for _ in range(7)]
            probs = softmax(logits)
            assert abs(sum(p.data for p in probs) - 1.0) < 1e-9

    def test_softmax_shift_invariant(self):
        from chargrad.model.ops import softmax
        from chargrad.model.value import Value
        raw = [0.3, -1.2, 2.5, 0.0]
        base = [p.data for p in softmax([Value(v) for v in raw])]
        shifted = [p.data for p in softmax([Value(v + 123.4) for v in raw])]
        np.testing.assert_allclose(base, shifted, atol=1e-12)

    def test_softmax_gradient(self):
        """d p_0 / d z_j = p_0 (δ_0j - p_j)."""
        from chargrad.model.ops import softmax
        from chargrad.model.value import Value
        logits = [Value(0.5), Value(-0.25), Value(1.0)]
        probs = softmax(logits)
        probs[0].backward()
        p = [q.data for q in probs]
        expected = [p[0] * ((1.0 if j == 0 else 0.0) - p[j]) for j in range(3)]
        np.testing.assert_allclose([l.grad for l in logits], expected, atol=1e-9)

    def test_rms_norm_unit_mean_square(self):
        from chargrad.model.ops import rms_norm
        from chargrad.model.value import Value
        rng = random.Random(2)
        for _ in range(10):
            x = [Value(rng.uniform(-5, 5)) for _ in range(8)]
            y = rms_norm(x)
            ms = sum(v.data ** 2 for v in y) / len(y)
            assert ms == pytest.approx(1.0, rel=1e-4)


# =============================================================================
# Vocabulary Tests
# =============================================================================

class TestVocab:
    """Tests for the character vocabulary."""

    def test_sorted_with_control_token(self):
        from chargrad.data.vocab import CharVocab
        vocab = CharVocab.from_docs(["cab", "bad"])
        assert vocab.chars == ["a", "b", "c", "d"]
        assert vocab.bos_id == 4
        assert vocab.vocab_size == 5

    def test_encode_wraps_with_control(self):
        from chargrad.data.vocab import CharVocab
        vocab = CharVocab.from_docs(["ab", "ba"])
        assert vocab.encode("ab") == [2, 0, 1, 2]
        assert vocab.encode("") == [2, 2]
        assert vocab.decode([2, 1, 0, 2]) == "ba"

    def test_unknown_character_rejected(self):
        from chargrad.data.vocab import CharVocab
        vocab = CharVocab.from_docs(["ab"])
        with pytest.raises(ValueError, match="not in the vocabulary"):
            vocab.encode("abc")

    def test_label(self):
        from chargrad.data.vocab import CharVocab, END_LABEL
        vocab = CharVocab.from_docs(["xy"])
        assert vocab.label(0) == "x"
        assert vocab.label(vocab.bos_id) == END_LABEL

    def test_empty_docs_rejected(self):
        from chargrad.data.vocab import CharVocab
        with pytest.raises(ValueError):
            CharVocab.from_docs(["", ""])


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_loads(self):
        from chargrad.config import CharGradConfig
        CharGradConfig().validate()

    def test_smoke_test_config(self):
        from chargrad.config import CharGradConfig
        config = CharGradConfig.for_smoke_test()
        config.validate()
        assert config.model.n_embd == 8

    def test_invalid_n_embd_n_head(self):
        from chargrad.config import ModelConfig
        config = ModelConfig(n_embd=6, n_head=4)
        with pytest.raises(ValueError, match="divisible"):
            config.validate()

    def test_lr_alias_and_unknown_keys(self):
        from chargrad.config import ModelConfig
        assert ModelConfig.from_dict({"lr": 0.1}).learning_rate == 0.1
        with pytest.raises(ValueError, match="Unknown"):
            ModelConfig.from_dict({"n_embd": 4, "dropout": 0.1})

    def test_yaml_round_trip(self, tmp_path):
        from chargrad.config import CharGradConfig
        config = CharGradConfig.for_smoke_test()

        yaml_path = tmp_path / "test_config.yaml"
        config.to_yaml(yaml_path)

        loaded = CharGradConfig.from_yaml(yaml_path)
        assert loaded.model == config.model
        assert loaded.training == config.training
        assert loaded.sampling == config.sampling

    def test_missing_yaml(self, tmp_path):
        from chargrad.config import CharGradConfig
        with pytest.raises(FileNotFoundError):
            CharGradConfig.from_yaml(tmp_path / "nope.yaml")

    def test_param_count_formula(self):
        from chargrad.config import ModelConfig
        config = ModelConfig.from_dict(TINY)
        assert config.param_count(vocab_size=3) == 2 * 3 * 4 + 8 * 4 + 12 * 16


# =============================================================================
# Model Tests
# =============================================================================

class TestCharGPT:
    """Tests for the parameter store and forward engine."""

    def test_param_count_matches_formula(self):
        model = _tiny_model()
        assert model.num_params == model.config.param_count(model.vocab.vocab_size)
        assert model.num_params == 248

    def test_matrix_shapes(self):
        model = _tiny_model()
        named = model.named_matrices()
        assert len(named["wte"]) == 3 and len(named["wte"][0]) == 4
        assert len(named["wpe"]) == 8
        assert len(named["layer0.mlp_fc1"]) == 16
        assert len(named["layer0.mlp_fc2"][0]) == 16

    def test_params_are_matrix_entries_in_creation_order(self):
        model = _tiny_model()
        assert model.params[0] is model.wte[0][0]
        assert model.params[-1] is model.layers[-1].mlp_fc2[-1][-1]
        assert len({id(p) for p in model.params}) == model.num_params

    def test_init_scale(self):
        model = _tiny_model(n_embd=16, n_head=4)
        std = float(np.std([p.data for p in model.params]))
        assert 0.01 < std < 0.03

    def test_forward_returns_vocab_logits(self):
        model = _tiny_model()
        cache = model.new_cache()
        logits = model.forward(model.vocab.bos_id, 0, cache)
        assert len(logits) == model.vocab.vocab_size

    def test_kv_cache_grows_per_step(self):
        model = _tiny_model(n_layer=2)
        cache = model.new_cache()
        for pos, tok in enumerate([2, 0, 1]):
            model.forward(tok, pos, cache)
            assert len(cache) == pos + 1
            assert all(len(k) == pos + 1 for k in cache.keys)
            assert all(len(v) == pos + 1 for v in cache.values)

    def test_first_position_independent_of_cache_history(self):
        """Attention at position 0 only sees its own key/value."""
        model = _tiny_model()
        a = model.forward(0, 0, model.new_cache())
        b = model.forward(0, 0, model.new_cache())
        assert [x.data for x in a] == [x.data for x in b]

    def test_out_of_range_position(self):
        model = _tiny_model()
        with pytest.raises(ValueError, match="pos_id"):
            model.forward(0, 8, model.new_cache())
        with pytest.raises(ValueError, match="token_id"):
            model.forward(3, 0, model.new_cache())

    def test_backward_reaches_parameters(self):
        from chargrad.model.ops import softmax
        model = _tiny_model()
        logits = model.forward(model.vocab.bos_id, 0, model.new_cache())
        loss = -softmax(logits)[0].log()
        loss.backward()
        assert any(p.grad != 0.0 for p in model.lm_head[0])
        assert any(p.grad != 0.0 for p in model.wte[model.vocab.bos_id])
        # rows of unused tokens receive nothing
        assert all(p.grad == 0.0 for p in model.wte[0])

        model.zero_grad()
        assert all(p.grad == 0.0 for p in model.params)


# =============================================================================
# Optimizer Tests
# =============================================================================

class TestAdam:
    """Tests for the Adam update."""

    def test_first_step(self):
        from chargrad.model.value import Value
        from chargrad.training.optimizer import Adam
        p = Value(0.0)
        p.grad = 1.0
        opt = Adam([p], lr=0.1)
        opt.step()
        # bias correction makes the first step exactly lr in size
        assert p.data == pytest.approx(-0.1, rel=1e-6)
        assert p.grad == 0.0
        assert opt.t == 1
        assert opt.m[0] == pytest.approx(0.15)
        assert opt.v[0] == pytest.approx(0.01)

    def test_second_step_moments(self):
        from chargrad.model.value import Value
        from chargrad.training.optimizer import Adam
        p = Value(1.0)
        opt = Adam([p], lr=0.01)
        p.grad = 2.0
        opt.step()
        p.grad = -1.0
        opt.step()

        m = 0.85 * (0.15 * 2.0) + 0.15 * -1.0
        v = 0.99 * (0.01 * 4.0) + 0.01 * 1.0
        assert opt.m[0] == pytest.approx(m)
        assert opt.v[0] == pytest.approx(v)

        m_hat = m / (1 - 0.85 ** 2)
        v_hat = v / (1 - 0.99 ** 2)
        expected = 1.0 - 0.01 - 0.01 * m_hat / (math.sqrt(v_hat) + 1e-8)
        assert p.data == pytest.approx(expected)

    def test_scale_grads(self):
        from chargrad.model.value import Value
        from chargrad.training.optimizer import Adam
        ps = [Value(0.0), Value(0.0)]
        ps[0].grad, ps[1].grad = 4.0, -2.0
        opt = Adam(ps, lr=0.1)
        opt.scale_grads(0.25)
        assert [p.grad for p in ps] == [1.0, -0.5]


# =============================================================================
# Trainer Tests
# =============================================================================

class TestTrainer:
    """Tests for the batched training loop."""

    def test_train_one_example_populates_grads(self):
        from chargrad.training.trainer import Trainer
        model = _tiny_model()
        trainer = Trainer(model, ["ab", "ba"], random.Random(0))
        result = trainer.train_one_example()
        assert result.loss > 0
        assert any(p.grad != 0.0 for p in model.params)
        # last position of "ab"/"ba" predicts the control token
        assert result.target_char == "<END>"
        assert result.context_char in ("a", "b")
        assert 0.0 < result.target_prob <= result.predicted_prob <= 1.0

    def test_batched_steps_updates_and_zeroes(self):
        from chargrad.training.trainer import Trainer
        model = _tiny_model()
        before = [p.data for p in model.params]
        trainer = Trainer(model, ["ab", "ba"], random.Random(0))
        result = trainer.train_batched_steps(steps_per_call=3, batch_size=2)
        assert result.step == 3
        assert math.isfinite(result.loss)
        assert all(p.grad == 0.0 for p in model.params)
        assert any(p.data != b for p, b in zip(model.params, before))

    def test_batched_loss_is_mean_of_batch_means(self):
        from chargrad.training.trainer import Trainer
        model = _tiny_model(docs=["ab", "ba", "abba"])
        trainer = Trainer(model, ["ab", "ba", "abba"], random.Random(3))

        seen = []
        original_one = trainer.train_one_example

        def recording():
            result = original_one()
            seen.append(result)
            return result

        trainer.train_one_example = recording
        result = trainer.train_batched_steps(steps_per_call=3, batch_size=2)

        assert len(seen) == 6
        batch_means = [
            (seen[i].loss + seen[i + 1].loss) / 2 for i in range(0, 6, 2)
        ]
        assert result.loss == pytest.approx(sum(batch_means) / 3, rel=1e-12)
        last = seen[-1]
        assert result.context_char == last.context_char
        assert result.target_char == last.target_char
        assert result.predicted_char == last.predicted_char
        assert result.target_prob == last.target_prob
        assert result.predicted_prob == last.predicted_prob

    def test_each_call_logs_summary_at_info(self, caplog):
        import logging
        from chargrad.training.trainer import Trainer
        trainer = Trainer(_tiny_model(), ["ab", "ba"], random.Random(0))
        with caplog.at_level(logging.INFO, logger="chargrad.training.trainer"):
            trainer.train_batched_steps(steps_per_call=2, batch_size=1)
        summaries = [
            r for r in caplog.records
            if r.name == "chargrad.training.trainer"
            and r.levelno == logging.INFO
        ]
        assert len(summaries) == 1
        message = summaries[0].getMessage()
        for field in ("step=2", "loss=", "ppl=", "time="):
            assert field in message

    def test_non_positive_counts_clamped(self):
        from chargrad.training.trainer import Trainer
        trainer = Trainer(_tiny_model(), ["ab"], random.Random(0))
        result = trainer.train_batched_steps(steps_per_call=0, batch_size=-3)
        assert result.step == 1

    def test_batch_gradient_is_mean_of_examples(self):
        """Accumulate-then-scale equals the mean of per-example grads."""
        from chargrad.training.trainer import Trainer
        model = _tiny_model(docs=["ab"])
        trainer = Trainer(model, ["ab"], random.Random(0))

        model.zero_grad()
        trainer.train_one_example()
        single = [p.grad for p in model.params]

        model.zero_grad()
        for _ in range(3):
            trainer.train_one_example()
        trainer.optimizer.scale_grads(1 / 3)
        np.testing.assert_allclose([p.grad for p in model.params], single, atol=1e-12)

    def test_truncates_to_block_size(self):
        from chargrad.training.trainer import Trainer
        model = _tiny_model(docs=["abcdefghij"], block_size=4)
        trainer = Trainer(model, ["abcdefghij"], random.Random(0))
        result = trainer.train_one_example()
        assert result.context_char == "c"
        assert result.target_char == "d"

    def test_empty_docs_rejected(self):
        from chargrad.training.trainer import Trainer
        with pytest.raises(ValueError):
            Trainer(_tiny_model(), [], random.Random(0))

    def test_loss_trends_down(self):
        from chargrad.training.trainer import Trainer
        model = _tiny_model(docs=["ab"])
        trainer = Trainer(model, ["ab"], random.Random(0))
        losses = [
            trainer.train_batched_steps(steps_per_call=1, batch_size=1).loss
            for _ in range(200)
        ]
        assert np.mean(losses[-20:]) < np.mean(losses[:20])
        assert np.mean(losses[-20:]) < 0.5


# =============================================================================
# Sampler Tests
# =============================================================================

class TestSampler:
    """Tests for probability vector construction and inverse-CDF draws."""

    def test_sampling_config_defaults_and_clamps(self):
        from chargrad.evaluation.sampler import SamplingOptions, sampling_config
        opts = sampling_config(SamplingOptions(temperature=0, top_k=99, min_len=-2), 5)
        assert opts.temperature == 0.7
        assert opts.top_k == 5
        assert opts.min_len == 0
        assert sampling_config(SamplingOptions(top_k=-1), 5).top_k == 0

    @pytest.mark.parametrize("top_k", [0, 1, 2, 4])
    @pytest.mark.parametrize("suppress", [False, True])
    def test_prob_vector_sums_to_one(self, top_k, suppress):
        from chargrad.evaluation.sampler import SamplingOptions, to_prob_vector
        logits = [0.2, -1.0, 3.0, 0.7]
        opts = SamplingOptions(temperature=0.5, top_k=top_k, min_len=0)
        _, probs = to_prob_vector(logits, opts, control_id=3, suppress_end=suppress)
        assert abs(probs.sum() - 1.0) < 1e-9
        if suppress:
            assert probs[3] == 0.0
        if top_k:
            assert np.count_nonzero(probs) <= top_k

    def test_temperature_scales_logits(self):
        from chargrad.evaluation.sampler import SamplingOptions, to_prob_vector
        scaled, _ = to_prob_vector([1.0, 2.0], SamplingOptions(temperature=0.5, top_k=0), 1, False)
        np.testing.assert_allclose(scaled, [2.0, 4.0])

    def test_top_k_keeps_highest(self):
        from chargrad.evaluation.sampler import SamplingOptions, to_prob_vector
        _, probs = to_prob_vector([0.0, 5.0, 1.0, 4.0], SamplingOptions(top_k=2), 0, False)
        assert probs[0] == 0.0 and probs[2] == 0.0
        assert probs[1] > probs[3] > 0.0

    def test_uniform_fallback_when_all_mass_removed(self):
        from chargrad.evaluation.sampler import SamplingOptions, to_prob_vector
        opts = SamplingOptions(temperature=1.0, top_k=1, min_len=0)
        _, probs = to_prob_vector([0.0, 0.0, 10.0], opts, control_id=2, suppress_end=True)
        np.testing.assert_allclose(probs, [0.5, 0.5, 0.0])

    def test_uniform_fallback_without_suppression(self):
        from chargrad.evaluation.sampler import SamplingOptions, to_prob_vector
        opts = SamplingOptions(temperature=1.0, top_k=0)
        _, probs = to_prob_vector([float("nan")] * 4, opts, control_id=3, suppress_end=False)
        np.testing.assert_allclose(probs, [0.25] * 4)

    @pytest.mark.parametrize("u", [0.0, 0.3, 0.5, 0.999999])
    def test_certain_token_always_selected(self, u):
        from chargrad.evaluation.sampler import select_interval
        draw = select_interval([0.0, 1.0, 0.0], u, fallback_id=2)
        assert draw.token_id == 1
        assert (draw.cum_before, draw.cum_after) == (0.0, 1.0)

    def test_interval_bounds(self):
        from chargrad.evaluation.sampler import select_interval
        draw = select_interval([0.1, 0.6, 0.3], 0.42, fallback_id=0)
        assert draw.token_id == 1
        assert draw.cum_before == pytest.approx(0.1)
        assert draw.cum_after == pytest.approx(0.7)
        assert draw.prob == 0.6
        assert draw.u == 0.42

    def test_fallback_when_rounding_leaves_gap(self):
        from chargrad.evaluation.sampler import select_interval
        draw = select_interval([0.3, 0.3, 0.3999], 0.99995, fallback_id=7)
        assert draw.token_id == 7
        assert draw.cum_after == pytest.approx(0.9999)

    def test_sample_uses_rng(self):
        from chargrad.evaluation.sampler import sample_from_prob_vector
        rng = random.Random(5)
        counts = [0, 0]
        for _ in range(2000):
            counts[sample_from_prob_vector([0.25, 0.75], rng, 0).token_id] += 1
        assert 0.2 < counts[0] / 2000 < 0.3

    def test_top_k_candidates_sorted(self):
        from chargrad.data.vocab import CharVocab
        from chargrad.evaluation.sampler import top_k_candidates
        vocab = CharVocab.from_docs(["abcdef"])
        probs = [0.05, 0.3, 0.1, 0.2, 0.15, 0.12, 0.08]
        cands = top_k_candidates(list(range(7)), probs, vocab)
        assert [c.token_id for c in cands] == [1, 3, 4, 5, 2]
        assert cands[0].char == "b"
        assert cands[0].logit == 1.0


# =============================================================================
# Generation Tests
# =============================================================================

class TestGenerator:
    """Tests for plain and traced generation."""

    def test_generate_within_block_size(self):
        from chargrad.evaluation.generate import TextGenerator
        model = _tiny_model()
        gen = TextGenerator(model, random.Random(0))
        for _ in range(5):
            text = gen.generate()
            assert len(text) <= model.config.block_size
            assert set(text) <= {"a", "b"}

    def test_min_len_blocks_early_stop(self):
        from chargrad.evaluation.generate import STOP_LENGTH_LIMIT, TextGenerator
        from chargrad.evaluation.sampler import SamplingOptions
        model = _tiny_model()
        gen = TextGenerator(model, random.Random(0))
        trace = gen.generate_with_trace(SamplingOptions(min_len=8, top_k=0))
        assert len(trace.text) == 8
        assert trace.stop_reason == STOP_LENGTH_LIMIT
        assert all(s.chosen_char != "<END>" for s in trace.steps)

    def test_trace_structure(self):
        from chargrad.evaluation.generate import (
            STOP_CONTROL_TOKEN, STOP_LENGTH_LIMIT, TextGenerator,
        )
        model = _tiny_model()
        trace = TextGenerator(model, random.Random(1)).generate_with_trace()

        assert trace.stop_reason in (STOP_CONTROL_TOKEN, STOP_LENGTH_LIMIT)
        assert 1 <= len(trace.steps) <= model.config.block_size
        for i, step in enumerate(trace.steps):
            assert step.position == i
            assert step.context == trace.text[:i]
            assert len(step.top_k) <= 5
            probs = [c.prob for c in step.top_k]
            assert probs == sorted(probs, reverse=True)
            assert step.cum_before <= step.random_u < step.cum_after
            assert 1 <= step.chosen_rank <= 5 or step.chosen_rank == model.vocab.vocab_size
            assert f"{step.random_u:.4f}" in step.reason
        if trace.stop_reason == STOP_CONTROL_TOKEN:
            assert trace.steps[-1].chosen_char == "<END>"
        else:
            assert len(trace.text) == model.config.block_size

    def test_explain_choice_mentions_top_candidate(self):
        from chargrad.evaluation.generate import explain_choice
        from chargrad.evaluation.sampler import Draw, TraceCandidate
        draw = Draw(token_id=1, u=0.8, cum_before=0.7, cum_after=0.9, prob=0.2)
        cands = [TraceCandidate("a", 0, 1.0, 0.7), TraceCandidate("b", 1, 0.2, 0.2)]
        reason = explain_choice(draw, "b", cands)
        assert "0.8000" in reason and "[0.7000, 0.9000)" in reason
        assert "Highest-probability option was 'a'" in reason
        assert "Highest" not in explain_choice(draw, "b", cands[1:])


# =============================================================================
# Session Tests
# =============================================================================

class TestSession:
    """End-to-end tests through the public handle."""

    def test_initialize_param_count(self):
        from chargrad.session import Session
        session = Session()
        info = session.initialize(["ab", "ba"], TINY)
        assert info == {"params": 2 * 3 * 4 + 8 * 4 + 12 * 4 * 4}

    def test_generate_after_initialize(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab", "ba"], TINY)
        text = session.generate()["text"]
        assert len(text) <= 8
        assert set(text) <= {"a", "b"}

    def test_reinitialize_is_idempotent_in_shape(self):
        from chargrad.session import Session
        session = Session()
        first = session.initialize(["hello", "world"], TINY)
        chars = list(session.model.vocab.chars)
        data = [p.data for p in session.model.params]
        session.train_step(1, 1)

        second = session.initialize(["hello", "world"], TINY)
        assert first == second
        assert session.model.vocab.chars == chars
        assert session.step == 0
        assert [p.data for p in session.model.params] != data

    def test_uninitialized_errors(self):
        from chargrad.session import Session
        session = Session()
        with pytest.raises(RuntimeError, match="not initialized"):
            session.train_step()
        with pytest.raises(RuntimeError, match="not initialized"):
            session.generate()
        with pytest.raises(RuntimeError, match="not initialized"):
            session.generate_with_trace()

    def test_initialize_rejects_bad_input(self):
        from chargrad.session import Session
        session = Session()
        with pytest.raises(ValueError):
            session.initialize([], TINY)
        with pytest.raises(ValueError):
            session.initialize([""], TINY)
        with pytest.raises(ValueError, match="divisible"):
            session.initialize(["ab"], {**TINY, "n_head": 3})
        assert not session.is_initialized

    def test_train_step_response(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab", "ba"], TINY)
        resp = session.train_step(steps_per_call=2, batch_size=3)
        assert set(resp) == {
            "step", "loss", "context_char", "target_char",
            "predicted_char", "target_prob", "predicted_prob",
        }
        assert resp["step"] == 2
        resp = session.train_step()
        assert resp["step"] == 4

    def test_trace_response_is_plain_data(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab", "ba"], TINY)
        resp = session.generate_with_trace({"temperature": 0.9, "top_k": 2})
        assert set(resp) == {"text", "steps", "stop_reason"}
        step = resp["steps"][0]
        assert set(step) == {
            "position", "context", "top_k", "random_u", "chosen_char",
            "chosen_prob", "chosen_rank", "cum_before", "cum_after", "reason",
        }
        assert set(step["top_k"][0]) == {"char", "token_id", "logit", "prob"}

    def test_unknown_option_rejected(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab"], TINY)
        with pytest.raises(ValueError, match="Unknown sampling options"):
            session.generate({"top_p": 0.9})

    def test_same_seed_same_results(self):
        from chargrad.config import TrainingConfig
        from chargrad.session import Session
        outputs = []
        for _ in range(2):
            session = Session(training=TrainingConfig(seed=11))
            session.initialize(["abc", "cab"], TINY)
            loss = session.train_step(2, 2)["loss"]
            outputs.append((loss, session.generate_with_trace()["text"]))
        assert outputs[0] == outputs[1]

    def test_state_properties_wait_for_lock(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab", "ba"], TINY)
        seen = []

        def read():
            seen.append((session.step, session.param_count))

        with session._lock:
            reader = threading.Thread(target=read)
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()
            assert seen == []
        reader.join(timeout=5)
        assert seen == [(0, session.model.num_params)]

    def test_concurrent_calls_are_serialized(self):
        from chargrad.session import Session
        session = Session()
        session.initialize(["ab", "ba"], TINY)
        errors = []

        def train():
            try:
                for _ in range(3):
                    session.train_step(1, 1)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def sample():
            try:
                for _ in range(3):
                    session.generate()
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=f) for f in (train, train, sample, sample)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert session.step == 6


# =============================================================================
# Metrics Tests
# =============================================================================

class TestMetrics:

    def test_perplexity(self):
        from chargrad.evaluation.metrics import perplexity_from_loss
        assert perplexity_from_loss(0.0) == 1.0
        assert perplexity_from_loss(math.log(3)) == pytest.approx(3.0)
        assert perplexity_from_loss(float("nan")) == float("inf")
        assert perplexity_from_loss(1e6) == float("inf")

    def test_timer(self):
        from chargrad.evaluation.metrics import Timer
        with Timer("noop") as t:
            sum(range(1000))
        assert t.elapsed >= 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
