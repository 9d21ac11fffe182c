from patchflow.io.image_io import load_intensity_f32, load_rgb_f32, to_intensity

__all__ = ["load_intensity_f32", "load_rgb_f32", "to_intensity"]
