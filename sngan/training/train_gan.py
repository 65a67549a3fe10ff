# train_gan.py
import argparse
import os
import random

import torch
import torch.optim as optim

from sngan.config import Config
from sngan.models.gan_model import Discriminator, Generator
from sngan.models.loss import GANLoss
from sngan.utils.data_loader import get_dataloader
from sngan.utils.logger import TrainingLogger
from sngan.utils.utils import make_image_grid, sample_interpolation_noise, sample_noise


class GANTrainer:
    """
    Alternating discriminator / generator updates.

    Every step updates the discriminator once; the generator is updated on
    steps where step % n_dis_update == 0, after the discriminator.
    """

    def __init__(self, generator, discriminator, criterion, n_dis_update=1,
                 lr_g=2e-4, lr_d=2e-4, betas=(0.5, 0.999), device="cpu"):
        self.device = torch.device(device)
        self.generator = generator.to(self.device)
        self.discriminator = discriminator.to(self.device)
        self.criterion = criterion
        self.n_dis_update = n_dis_update
        self.latent_size = generator.options.latent_size

        self.optimizer_G = optim.Adam(self.generator.parameters(), lr=lr_g, betas=betas)
        self.optimizer_D = optim.Adam(self.discriminator.parameters(), lr=lr_d, betas=betas)

    @classmethod
    def from_config(cls, config, device="cpu"):
        return cls(
            Generator(config.generator),
            Discriminator(config.discriminator),
            GANLoss(config.loss),
            n_dis_update=config.n_dis_update,
            lr_g=config.lr_g,
            lr_d=config.lr_d,
            betas=(config.beta1, config.beta2),
            device=device,
        )

    def sample_noise(self, batch_size):
        return sample_noise(batch_size, self.latent_size, self.device)

    @staticmethod
    def set_requires_grad(model, requires_grad=True):
        for p in model.parameters():
            p.requires_grad = requires_grad

    @staticmethod
    def _check_finite(name, loss, step):
        if not torch.isfinite(loss).all():
            raise FloatingPointError(f"{name} is not finite at step {step}: {loss.item()}")

    def train_step(self, reals, step):
        """
        One training step on a batch of real images in [-1, 1].
        Returns {"lossD", "lossG" (None when the generator was skipped), "fakes"}.
        """
        self.generator.train()
        self.discriminator.train()
        batch_size = reals.size(0)

        # ---------------- Train Discriminator ----------------
        with torch.no_grad():
            fakes = self.generator(self.sample_noise(batch_size))

        self.optimizer_D.zero_grad()
        real_scores = self.discriminator(reals)
        fake_scores = self.discriminator(fakes)
        d_loss = self.criterion.loss_d(real_scores, fake_scores)
        self._check_finite("lossD", d_loss, step)
        d_loss.backward()
        self.optimizer_D.step()

        result = {"lossD": d_loss.item(), "lossG": None, "fakes": fakes}

        # ---------------- Train Generator ----------------
        if step % self.n_dis_update == 0:
            self.set_requires_grad(self.discriminator, False)
            try:
                self.optimizer_G.zero_grad()
                gen_imgs = self.generator(self.sample_noise(batch_size))
                g_loss = self.criterion.loss_g(self.discriminator(gen_imgs))
                self._check_finite("lossG", g_loss, step)
                g_loss.backward()
                self.optimizer_G.step()
            finally:
                self.set_requires_grad(self.discriminator, True)
            result["lossG"] = g_loss.item()

        return result

    def train(self, batch_source, num_steps, logger, start_step=0, print_interval=10,
              log_interval=100, test_interval=1000, plot_grid_cols=8):
        """
        Run steps [start_step, num_steps). Each batch from
        batch_source.next_batch() is rescaled from [0, 1] to [-1, 1].
        """
        test_noise = self.sample_noise(plot_grid_cols * plot_grid_cols)
        interpolation_noise = sample_interpolation_noise(
            self.latent_size, rows=plot_grid_cols, cols=plot_grid_cols, device=self.device
        )

        result = None
        for step in range(start_step, num_steps):
            reals, _ = batch_source.next_batch()
            reals = reals.to(self.device) * 2 - 1

            result = self.train_step(reals, step)

            losses = {"lossD": result["lossD"]}
            if result["lossG"] is not None:
                losses["lossG"] = result["lossG"]
            logger.log(step, losses, echo=step % print_interval == 0)

            if step % log_interval == 0:
                fakes = result["fakes"]
                self._plot_images(logger, "reals", reals, step, plot_grid_cols)
                self._plot_images(logger, "fakes", fakes, step, plot_grid_cols)

                self.generator.write_histograms(logger, step, "G")
                self.discriminator.write_histograms(logger, step, "D")
                for name, sigma in self.generator.spectral_norms().items():
                    logger.add_scalar(f"G/sigma/{name}", sigma, step)
                for name, sigma in self.discriminator.spectral_norms().items():
                    logger.add_scalar(f"D/sigma/{name}", sigma, step)

                fake_std = fakes.std(dim=0).mean().item()
                logger.add_scalar("fake_std", fake_std, step)
                logger.flush()

            if step % test_interval == 0:
                # Inference
                self.generator.eval()
                self.discriminator.eval()
                with torch.no_grad():
                    tests = self.generator(test_noise)
                    interpolations = self.generator(interpolation_noise)
                self._plot_images(logger, "tests", tests, step, plot_grid_cols)
                self._plot_images(logger, "interpolations", interpolations, step, plot_grid_cols)
                logger.flush()

        return result

    @staticmethod
    def _plot_images(logger, tag, images, step, cols):
        cols = min(cols, images.size(0))
        count = images.size(0) // cols * cols
        logger.add_image(tag, make_image_grid(images[:count], nrow=cols), step)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train a spectrally normalized GAN on a directory of images.")
    parser.add_argument("image_dir", help="Directory containing the training images")
    parser.add_argument("--config", default=None, help="JSON configuration file")
    parser.add_argument("--steps", type=int, default=10_000_000, help="Number of training steps to run")
    parser.add_argument("--output", default="output", help="Root folder for logs and images")
    parser.add_argument("--device", default=None, help="Torch device (default: cuda if available)")
    args = parser.parse_args(argv)

    # ------------------ 1. Configuration ------------------
    try:
        config = Config.from_json(args.config) if args.config else Config()
    except (OSError, ValueError) as e:
        parser.error(f"invalid config: {e}")

    device = args.device or ("cuda" if torch.cuda.is_available() else "cpu")
    print(f"Seed: {config.seed}, device: {device}")
    random.seed(config.seed)
    torch.manual_seed(config.seed)

    # ------------------ 2. Dataset ------------------
    print("Search images...")
    try:
        batch_source = get_dataloader(args.image_dir, image_size=config.image_size,
                                      batch_size=config.batch_size, num_workers=config.num_workers)
    except (FileNotFoundError, ValueError) as e:
        parser.error(str(e))
    print(f"Total images: {len(batch_source.dataset)}")

    # ------------------ 3. Models ------------------
    trainer = GANTrainer.from_config(config, device=device)

    logger = TrainingLogger(folder=os.path.join(args.output, config.log_name))
    logger.add_text(f"{config.log_name}/loss", trainer.criterion.name)
    logger.add_text(f"{config.log_name}/config", config.to_json())

    # ------------------ 4. Training Loop ------------------
    try:
        trainer.train(
            batch_source,
            args.steps,
            logger,
            print_interval=config.print_interval,
            log_interval=config.log_interval,
            test_interval=config.test_interval,
            plot_grid_cols=config.plot_grid_cols,
        )
    finally:
        logger.close()

    print(f"Training complete. Check '{logger.folder}' for logs and images.")


if __name__ == "__main__":
    main()
