"""Prompt resolution for queue items.

Resolves the prompt sent to the provider from a project's prompt template, studio
preset or custom prompt. The preset builder is deterministic: the same preset always
renders the same text, in the same order.
"""

from typing import Optional

from facet.models.project import Project, PromptTemplate, StudioPreset

DEFAULT_PROMPT = "Enhance this jewelry image with clean white background"

BASE_DESCRIPTION = "Professional jewelry product photography"
QUALITY_BOOSTER = "8K resolution, ultra high detail, commercial quality, ready for e-commerce"

LENS_DESCRIPTIONS = {
    "50mm": "50mm lens for natural perspective",
    "85mm": "85mm portrait lens for flattering compression",
    "100mm": "100mm macro lens for extreme detail",
    "135mm": "135mm telephoto for beautiful bokeh",
}
APERTURE_DESCRIPTIONS = {
    "f/1.4": "wide open at f/1.4 for creamy bokeh",
    "f/2.8": "f/2.8 for subject isolation",
    "f/8": "f/8 for sharp detail throughout",
    "f/16": "f/16 for maximum depth of field",
}
ANGLE_DESCRIPTIONS = {
    "top-down": "shot from directly above (flat lay)",
    "45deg": "shot at 45 degree angle",
    "eye-level": "eye-level perspective",
    "low-angle": "shot from low angle looking up",
}
FOCUS_DESCRIPTIONS = {
    "shallow-dof": "shallow depth of field with artistic blur",
    "tilt-shift": "tilt-shift effect for miniature look",
}

LIGHTING_STYLE_DESCRIPTIONS = {
    "studio-3point": "professional three-point studio lighting",
    "natural": "soft natural window light",
    "dramatic": "dramatic high-contrast lighting with deep shadows",
    "soft": "soft diffused lighting for even illumination",
    "rim": "rim lighting for edge definition",
    "split": "split lighting for artistic effect",
}
LIGHTING_DIRECTION_DESCRIPTIONS = {
    "top-left": "light from upper left",
    "top": "overhead lighting",
    "top-right": "light from upper right",
    "left": "side lighting from left",
    "center": "front-facing light",
    "right": "side lighting from right",
    "bottom-left": "low light from left",
    "bottom": "low accent lighting",
    "bottom-right": "low light from right",
}

BACKGROUND_TYPE_DESCRIPTIONS = {
    "white": "clean pure white background",
    "gradient": "subtle gradient background",
    "black": "dramatic black background",
    "transparent": "transparent background for compositing",
    "scene": "lifestyle scene setting",
}
SURFACE_DESCRIPTIONS = {
    "marble": "on luxurious marble surface",
    "velvet": "on rich velvet fabric",
    "wood": "on natural wood surface",
    "mirror": "on reflective mirror surface",
    "silk": "on elegant silk fabric",
    "concrete": "on modern concrete surface",
}
SHADOW_DESCRIPTIONS = {
    "none": "",
    "soft": "with soft natural shadow",
    "hard": "with crisp defined shadow",
    "floating": "floating with subtle shadow below",
}

METAL_DESCRIPTIONS = {
    "gold": "rich yellow gold with warm tones",
    "silver": "brilliant silver with cool tones",
    "rose-gold": "elegant rose gold with pink undertones",
    "platinum": "lustrous platinum finish",
    "mixed": "mixed metals beautifully combined",
}
FINISH_DESCRIPTIONS = {
    "high-polish": "highly polished mirror-like finish",
    "matte": "sophisticated matte finish",
    "brushed": "brushed texture finish",
    "hammered": "artisanal hammered texture",
}

FRAMING_DESCRIPTIONS = {
    "center": "centered composition",
    "rule-of-thirds": "composed using rule of thirds",
    "golden-ratio": "golden ratio composition",
}
ASPECT_DESCRIPTIONS = {
    "1:1": "square format",
    "4:5": "portrait format for Instagram",
    "16:9": "widescreen format",
    "9:16": "vertical story format",
    "3:4": "classic portrait ratio",
    "4:3": "classic landscape ratio",
}


def _camera_clause(preset: StudioPreset) -> str:
    parts = [
        LENS_DESCRIPTIONS.get(preset.camera_lens) or f"{preset.camera_lens} lens",
        APERTURE_DESCRIPTIONS.get(preset.camera_aperture) or preset.camera_aperture,
        ANGLE_DESCRIPTIONS.get(preset.camera_angle) or preset.camera_angle,
    ]
    if preset.camera_focus in FOCUS_DESCRIPTIONS:
        parts.append(FOCUS_DESCRIPTIONS[preset.camera_focus])
    return ", ".join(parts)


def _lighting_clause(preset: StudioPreset) -> str:
    parts = [
        LIGHTING_STYLE_DESCRIPTIONS.get(preset.lighting_style) or preset.lighting_style,
        LIGHTING_DIRECTION_DESCRIPTIONS.get(preset.lighting_direction) or preset.lighting_direction,
    ]
    if preset.lighting_key_intensity > 80:
        parts.append("bright key light")
    elif preset.lighting_key_intensity < 40:
        parts.append("subtle key light")
    if preset.lighting_rim_intensity > 60:
        parts.append("strong rim lighting for edge separation")
    return ", ".join(parts)


def _background_clause(preset: StudioPreset) -> str:
    parts = [BACKGROUND_TYPE_DESCRIPTIONS.get(preset.background_type) or preset.background_type]
    if preset.background_surface != "none" and preset.background_surface in SURFACE_DESCRIPTIONS:
        parts.append(SURFACE_DESCRIPTIONS[preset.background_surface])
    if SHADOW_DESCRIPTIONS.get(preset.background_shadow):
        parts.append(SHADOW_DESCRIPTIONS[preset.background_shadow])
    if preset.background_reflection > 30:
        parts.append("with mirror-like reflection")
    elif preset.background_reflection > 0:
        parts.append("with subtle reflection")
    return ", ".join(part for part in parts if part)


def _jewelry_clause(preset: StudioPreset) -> str:
    parts = []
    if preset.jewelry_metal != "auto" and preset.jewelry_metal in METAL_DESCRIPTIONS:
        parts.append(METAL_DESCRIPTIONS[preset.jewelry_metal])
    parts.append(FINISH_DESCRIPTIONS.get(preset.jewelry_finish) or preset.jewelry_finish)
    if preset.jewelry_sparkle > 80:
        parts.append("brilliant sparkling highlights and light play")
    elif preset.jewelry_sparkle > 50:
        parts.append("elegant sparkle and shine")
    if preset.jewelry_color_pop > 70:
        parts.append("vibrant enhanced colors")
    if preset.jewelry_detail > 80:
        parts.append("extreme detail showing every facet and texture")
    elif preset.jewelry_detail > 50:
        parts.append("sharp detail throughout")
    return ", ".join(parts)


def _composition_clause(preset: StudioPreset) -> str:
    parts = [
        FRAMING_DESCRIPTIONS.get(preset.composition_framing) or preset.composition_framing,
        ASPECT_DESCRIPTIONS.get(preset.composition_aspect_ratio)
        or preset.composition_aspect_ratio,
    ]
    if preset.composition_padding > 30:
        parts.append("generous negative space around subject")
    return ", ".join(parts)


def build_preset_prompt(preset: StudioPreset) -> str:
    """Render a studio preset into a photography prompt.

    Clauses are emitted in a fixed order (camera, lighting, background, jewelry,
    composition) between the base description and the quality booster.

    Args:
        preset: Studio preset with camera/lighting/background/jewelry/composition fields

    Returns:
        Prompt text ending with a period
    """
    parts = [
        BASE_DESCRIPTION,
        _camera_clause(preset),
        _lighting_clause(preset),
        _background_clause(preset),
        _jewelry_clause(preset),
        _composition_clause(preset),
        QUALITY_BOOSTER,
    ]
    return ". ".join(parts) + "."


def build_template_prompt(template: PromptTemplate) -> str:
    parts = [
        template.base_prompt,
        f"Style: {template.style}" if template.style else None,
        f"Background: {template.background}" if template.background else None,
        f"Lighting: {template.lighting}" if template.lighting else None,
    ]
    return ". ".join(part for part in parts if part)


def resolve_prompt(
    project: Project,
    template: Optional[PromptTemplate] = None,
    preset: Optional[StudioPreset] = None,
    default_prompt: str = DEFAULT_PROMPT,
) -> str:
    """Pick the prompt for a queue item: template > preset > custom prompt > default."""
    if template is not None:
        return build_template_prompt(template)
    if preset is not None:
        return build_preset_prompt(preset)
    if project.custom_prompt:
        return project.custom_prompt
    return default_prompt
