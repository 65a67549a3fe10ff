import torch
import torch.nn.functional as F

LOSS_TYPES = ("non_saturating", "lsgan", "hinge")


def _non_saturating_g(scores):
    return F.softplus(-scores).mean()


def _non_saturating_d(real, fake):
    return F.softplus(-real).mean() + F.softplus(fake).mean()


def _lsgan_g(scores):
    return torch.pow(scores - 1, 2).mean()


def _lsgan_d(real, fake):
    return torch.pow(real - 1, 2).mean() + torch.pow(fake, 2).mean()


def _hinge_g(scores):
    return -scores.mean()


def _hinge_d(real, fake):
    return F.relu(1 - real).mean() + F.relu(1 + fake).mean()


class GANLoss:
    """
    Adversarial loss on raw discriminator scores.

    Args:
        loss_type: 'non_saturating', 'lsgan' or 'hinge'
    """

    _FUNCTIONS = {
        "non_saturating": (_non_saturating_g, _non_saturating_d),
        "lsgan": (_lsgan_g, _lsgan_d),
        "hinge": (_hinge_g, _hinge_d),
    }

    def __init__(self, loss_type="hinge"):
        if loss_type not in self._FUNCTIONS:
            raise ValueError(f"Unknown loss type '{loss_type}', expected one of {LOSS_TYPES}")
        self.loss_type = loss_type
        self._loss_g, self._loss_d = self._FUNCTIONS[loss_type]

    @property
    def name(self):
        return self.loss_type

    def loss_g(self, scores):
        return self._loss_g(scores)

    def loss_d(self, real, fake):
        return self._loss_d(real, fake)

    def __repr__(self):
        return f"GANLoss(loss_type='{self.loss_type}')"
