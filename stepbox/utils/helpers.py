import torch


def check_finite(tensor: torch.Tensor, name: str = "tensor"):
    """
    Verifica que un tensor no contenga NaN o Inf.

    Args:
        tensor: Tensor a verificar
        name: Nombre del tensor para mensajes de error

    Raises:
        ValueError: Si el tensor contiene NaN o Inf
    """
    if not torch.isfinite(tensor).all():
        nan_count = torch.isnan(tensor).sum().item()
        inf_count = torch.isinf(tensor).sum().item()
        raise ValueError(f"{name} contiene {nan_count} NaN y {inf_count} Inf")


def to_device_dtype(tensor: torch.Tensor, device: torch.device, dtype: torch.dtype) -> torch.Tensor:
    """Mueve tensor a device y dtype especificados si es necesario."""
    if tensor.device != device or tensor.dtype != dtype:
        return tensor.to(device=device, dtype=dtype)
    return tensor
