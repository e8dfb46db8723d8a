"""Tests for training modules"""
# Location: tests/test_training.py

import tempfile
import unittest
from pathlib import Path

import torch

from tire_ml.engine.model_registry import ModelStore
from tire_ml.engine.pytorch_inference import ModelServerEngine
from tire_ml.errors import ImageDecodeError, InsufficientDataError, NotFoundError
from tire_ml.feedback.records import SampleLabels, TrainingSample
from tire_ml.feedback.sample_store import SampleStore
from tire_ml.training.architectures import TASKS, TireConvNet, build_model, get_task
from tire_ml.training.dataset import SyntheticTireDataset, collect_labeled, is_held_out
from tire_ml.training.trainer import TrainingConfig, TrainingPipeline

from .helpers import make_jpeg

IMAGE_SIZE = 32


def tiny_config(**overrides):
    values = dict(
        image_size=IMAGE_SIZE,
        regression_epochs=1,
        classification_epochs=1,
        batch_size=4,
        min_real_samples=4,
        synthetic_samples=8,
        test_fraction=0.0,
        device="cpu",
    )
    values.update(overrides)
    return TrainingConfig(**values)


def add_labeled_samples(store, count, **labels):
    for i in range(count):
        sample_id = store.new_sample_id()
        path = store.write_image(sample_id, make_jpeg(48, 48, color=(20 * i % 255, 80, 40)))
        store.write(TrainingSample(
            id=sample_id, image_path=str(path), tire_id=f"tire-{i}", labels=SampleLabels(**labels),
        ))


class TestArchitectures(unittest.TestCase):
    """Test suite for the task definitions and network"""

    def test_task_lookup_by_key_or_model_name(self):
        self.assertIs(get_task("treadDepth"), get_task("tread-depth-model"))
        with self.assertRaises(KeyError):
            get_task("tyre-colour")

    def test_output_shapes(self):
        images = torch.rand(2, 3, IMAGE_SIZE, IMAGE_SIZE)
        for task in TASKS.values():
            with self.subTest(task=task.key):
                model = build_model(task, image_size=IMAGE_SIZE).eval()
                self.assertEqual(tuple(model(images).shape), (2, task.output_dim))

    def test_image_size_must_divide_by_eight(self):
        with self.assertRaises(ValueError):
            TireConvNet(image_size=30)


class TestDatasets(unittest.TestCase):
    """Test suite for the held-out split and synthetic data"""

    def test_held_out_split_is_stable(self):
        ids = [f"sample_{i}_abcdef012" for i in range(500)]
        first = [is_held_out(i, 0.2) for i in ids]
        self.assertEqual(first, [is_held_out(i, 0.2) for i in ids])
        self.assertTrue(50 < sum(first) < 150)
        self.assertFalse(any(is_held_out(i, 0.0) for i in ids))

    def test_synthetic_dataset_is_deterministic(self):
        dataset = SyntheticTireDataset(TASKS["treadDepth"], count=4, image_size=IMAGE_SIZE, seed=5)
        image_a, target_a = dataset[2]
        image_b, target_b = dataset[2]
        self.assertTrue(torch.equal(image_a, image_b))
        self.assertTrue(torch.equal(target_a, target_b))
        self.assertTrue(1.0 <= float(target_a) <= 10.0)

        classes = SyntheticTireDataset(TASKS["conditionClassifier"], count=20, image_size=IMAGE_SIZE)
        self.assertTrue(all(0 <= int(classes[i][1]) < 5 for i in range(20)))


class TestTrainingPipeline(unittest.TestCase):
    """Test suite for training and artifact versioning"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = SampleStore(self.root / "data", image_size=IMAGE_SIZE)
        self.model_store = ModelStore(self.root / "models")

    def tearDown(self):
        self._tmp.cleanup()

    def test_empty_store_trains_on_synthetic_data(self):
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config())
        result = trainer.train("treadDepth")

        self.assertEqual(result.data_source, "synthetic")
        self.assertEqual(result.version, 1)
        self.assertEqual(result.sample_count, 8)
        manifest = self.model_store.load_manifest("tread-depth-model")
        self.assertEqual(manifest.data_source, "synthetic")
        self.assertEqual(manifest.input_shape, [None, 3, IMAGE_SIZE, IMAGE_SIZE])

    def test_no_data_without_synthetic_raises(self):
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config(allow_synthetic=False))
        with self.assertRaises(InsufficientDataError):
            trainer.train("conditionClassifier")
        with self.assertRaises(InsufficientDataError):
            trainer.train_all()
        self.assertFalse(self.model_store.exists("condition-classifier-model"))

    def test_real_data_is_used_when_sufficient(self):
        add_labeled_samples(self.store, 5, tread_depth=6.0, condition="good", wear_pattern="uniform")
        self.assertEqual(len(collect_labeled(self.store, TASKS["treadDepth"], held_out=False, test_fraction=0.0)), 5)

        trainer = TrainingPipeline(self.store, self.model_store, tiny_config())
        result = trainer.train("wearPattern")
        self.assertEqual(result.data_source, "real")
        self.assertEqual(result.sample_count, 5)

    def test_partial_failure_is_recorded(self):
        add_labeled_samples(self.store, 5, tread_depth=3.0)
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config(allow_synthetic=False))
        summary = trainer.train_all()

        self.assertEqual(list(summary.results), ["treadDepth"])
        self.assertEqual(set(summary.failures), {"conditionClassifier", "wearPattern"})
        self.assertIn("failures", summary.to_dict())

    def test_retraining_versions_and_restores_backup(self):
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config())
        trainer.train("treadDepth")
        second = trainer.train("treadDepth")

        self.assertEqual(second.version, 2)
        self.assertTrue(self.model_store.has_backup("tread-depth-model"))
        restored = self.model_store.restore_previous("tread-depth-model")
        self.assertEqual(restored.version, 1)
        with self.assertRaises(NotFoundError):
            self.model_store.restore_previous("tread-depth-model")

    def test_list_models_skips_backups(self):
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config())
        trainer.train("treadDepth")
        trainer.train("treadDepth")
        trainer.train("wearPattern")

        manifests = self.model_store.list_models()
        self.assertEqual(
            {m.name: m.version for m in manifests},
            {"tread-depth-model": 2, "wear-pattern-model": 1},
        )

    def test_saved_model_reloads(self):
        trainer = TrainingPipeline(self.store, self.model_store, tiny_config())
        trainer.train("conditionClassifier")
        model, manifest = self.model_store.load("condition-classifier-model")
        self.assertEqual(manifest.labels, ["excellent", "good", "fair", "poor", "critical"])
        output = model(torch.rand(1, 3, IMAGE_SIZE, IMAGE_SIZE))
        self.assertEqual(tuple(output.shape), (1, 5))


class TestModelServerEngine(unittest.TestCase):
    """Test suite for the model server engine"""

    @classmethod
    def setUpClass(cls):
        cls._tmp = tempfile.TemporaryDirectory()
        root = Path(cls._tmp.name)
        cls.model_store = ModelStore(root / "models")
        trainer = TrainingPipeline(SampleStore(root / "data"), cls.model_store, tiny_config())
        trainer.train_all()

    @classmethod
    def tearDownClass(cls):
        cls._tmp.cleanup()

    def test_loads_every_model(self):
        engine = ModelServerEngine(self.model_store, device="cpu")
        status = engine.load_all()
        self.assertEqual(set(status), {task.model_name for task in TASKS.values()})
        self.assertTrue(all(status.values()))
        self.assertTrue(engine.is_ready)

    def test_analyze_image(self):
        engine = ModelServerEngine(self.model_store, device="cpu")
        engine.load_all()
        analysis = engine.analyze_image(make_jpeg(80, 60))

        self.assertTrue(0.0 <= analysis["treadDepth"]["value"] <= 10.0)
        self.assertAlmostEqual(sum(analysis["condition"]["scores"].values()), 1.0, places=5)
        self.assertIn(analysis["wearPattern"]["severity"], ["low", "medium", "high"])
        self.assertEqual(analysis["metadata"]["imageSize"], IMAGE_SIZE)
        self.assertEqual(len(analysis["metadata"]["modelsUsed"]), 3)

    def test_missing_models_give_partial_analysis(self):
        engine = ModelServerEngine(ModelStore(Path(self._tmp.name) / "empty"), device="cpu")
        self.assertFalse(any(engine.load_all().values()))
        self.assertFalse(engine.is_ready)
        analysis = engine.analyze_image(make_jpeg())
        self.assertEqual(set(analysis), {"metadata"})
        self.assertEqual(engine.model_info()["tread-depth-model"], {"loaded": False, "inputShape": None, "outputShape": None})

    def test_rejects_undecodable_image(self):
        engine = ModelServerEngine(self.model_store, device="cpu")
        engine.load_all()
        with self.assertRaises(ImageDecodeError):
            engine.analyze_image(b"\x00\x01")


if __name__ == '__main__':
    unittest.main()
