# logger.py
import csv
import json
import os

import matplotlib.pyplot as plt
import torch


class TrainingLogger:
    """
    Scalar / image / histogram / text sink for a training run.

    Scalars are buffered and appended to training_log.csv and
    training_log.jsonl on flush(). Histograms are appended to
    histograms.jsonl, one JSON object per line. Images are written as PNG
    files under images/ and text entries go to text/<tag>.txt.
    """

    def __init__(self, folder="logs", histogram_bins=30):
        self.folder = folder
        self.histogram_bins = histogram_bins
        os.makedirs(folder, exist_ok=True)
        self.csv_path = os.path.join(folder, "training_log.csv")
        self.json_path = os.path.join(folder, "training_log.jsonl")
        self.histogram_path = os.path.join(folder, "histograms.jsonl")
        self.image_dir = os.path.join(folder, "images")
        self.text_dir = os.path.join(folder, "text")

        self._scalars = []
        self._histograms = []
        self.closed = False

        # Initialize files if not already
        if not os.path.exists(self.csv_path):
            with open(self.csv_path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["Step", "Tag", "Value"])

    def add_scalar(self, tag, value, step):
        if isinstance(value, torch.Tensor):
            value = value.item()
        self._scalars.append({"Step": step, "Tag": tag, "Value": float(value)})

    def add_image(self, tag, image, step):
        """
        Args:
            image (Tensor): shape (C, H, W) with values in [0, 1]
        """
        os.makedirs(self.image_dir, exist_ok=True)
        image = image.detach().cpu().clamp(0, 1)
        if image.size(0) == 1:
            image = image.expand(3, -1, -1)
        filename = f"{tag.replace('/', '_')}_{step:08d}.png"
        save_path = os.path.join(self.image_dir, filename)
        plt.imsave(save_path, image.permute(1, 2, 0).numpy())
        return save_path

    def add_histogram(self, tag, values, step):
        values = values.detach().float().cpu().flatten()
        lo, hi = values.min().item(), values.max().item()
        # constant tensors get a unit-wide range
        edges = (lo, hi) if hi > lo else (lo - 0.5, hi + 0.5)
        counts = torch.histc(values, bins=self.histogram_bins, min=edges[0], max=edges[1])
        self._histograms.append({
            "Step": step,
            "Tag": tag,
            "Min": lo,
            "Max": hi,
            "Mean": values.mean().item(),
            "Counts": counts.tolist(),
        })

    def add_text(self, tag, text):
        os.makedirs(self.text_dir, exist_ok=True)
        path = os.path.join(self.text_dir, f"{tag.replace('/', '_')}.txt")
        with open(path, "w") as f:
            f.write(text)

    def log(self, step, losses, echo=True):
        """
        Logs a dictionary of losses for a step (e.g., {"lossD": x, "lossG": y})
        and prints them when echo is set.
        """
        for tag, value in losses.items():
            self.add_scalar(tag, value, step)

        if echo:
            loss_str = ", ".join([f"{k}={v:.4f}" for k, v in losses.items()])
            print(f"{step}: {loss_str}")

    def flush(self):
        if self._scalars:
            # Update CSV
            with open(self.csv_path, "a", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=["Step", "Tag", "Value"])
                writer.writerows(self._scalars)

            self._append_jsonl(self.json_path, self._scalars)
            self._scalars = []

        if self._histograms:
            self._append_jsonl(self.histogram_path, self._histograms)
            self._histograms = []

    @staticmethod
    def _append_jsonl(path, entries):
        with open(path, "a") as f:
            for entry in entries:
                f.write(json.dumps(entry) + "\n")

    def close(self):
        if not self.closed:
            self.flush()
            self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
