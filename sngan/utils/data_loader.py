import os

import torch
from PIL import Image
from torch.utils.data import DataLoader, Dataset
from torchvision import transforms

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".gif", ".webp")


def find_images(root):
    """All image files under root, sorted"""
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Image directory not found: {root}")
    paths = []
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            if name.lower().endswith(IMAGE_EXTENSIONS):
                paths.append(os.path.join(dirpath, name))
    return sorted(paths)


class ImageDirectoryDataset(Dataset):
    """Images under a directory, resized (aspect fill) and center-cropped to image_size"""

    def __init__(self, root, image_size=64):
        self.root = root
        self.paths = find_images(root)
        if not self.paths:
            raise ValueError(f"No images found in {root}")

        self.transforms = transforms.Compose([
            transforms.Resize(image_size),
            transforms.CenterCrop(image_size),
            transforms.ToTensor(),  # [0, 1]
        ])

    def __len__(self):
        return len(self.paths)

    def __getitem__(self, idx):
        img = Image.open(self.paths[idx]).convert("RGB")
        return self.transforms(img), 0


class BatchSource:
    """
    Endless supply of shuffled batches.

    next_batch() blocks until a batch is ready and starts a new shuffled
    epoch when the current one is exhausted. Iterating yields one epoch.
    """

    def __init__(self, dataset, batch_size, num_workers=0):
        if len(dataset) < batch_size:
            raise ValueError(f"Dataset has {len(dataset)} images, fewer than one batch of {batch_size}")
        self.dataset = dataset
        self.batch_size = batch_size
        self.loader = DataLoader(dataset, batch_size=batch_size, shuffle=True,
                                 num_workers=num_workers, drop_last=True)
        self._iterator = None

    def __len__(self):
        return len(self.loader)

    def __iter__(self):
        return iter(self.loader)

    def shuffle(self):
        """Drop the rest of the current epoch and start a freshly shuffled one"""
        self._iterator = iter(self.loader)

    def next_batch(self):
        if self._iterator is None:
            self.shuffle()
        try:
            return next(self._iterator)
        except StopIteration:
            self.shuffle()
            return next(self._iterator)


def get_dataloader(image_dir, image_size=64, batch_size=32, num_workers=0):
    dataset = ImageDirectoryDataset(image_dir, image_size)
    return BatchSource(dataset, batch_size, num_workers=num_workers)
