"""Raw JavaScript payloads evaluated inside page and widget frames.

Every payload is an arrow function suitable for Playwright's
``evaluate`` / ``evaluate_handle``.  Element-scoped payloads receive
the element as their first argument.
"""

# -- Widget status ---------------------------------------------------------

WIDGET_METRICS = """
(selectors) => ({
    width: window.innerWidth,
    height: window.innerHeight,
    url: window.location.href,
    bodyText: document.body ? (document.body.innerText || '') : '',
    hasContent: selectors.some((s) => {
        try { return !!document.querySelector(s); } catch (e) { return false; }
    }),
    readyState: document.readyState,
})
"""

# -- Tree traversal --------------------------------------------------------

QUERY_ALL = """
(root, selector) => {
    try { return Array.from(root.querySelectorAll(selector)); }
    catch (e) { return []; }
}
"""

SHADOW_ROOTS = """
(root) => {
    const doc = root.ownerDocument || root;
    const walker = doc.createTreeWalker(root, NodeFilter.SHOW_ELEMENT);
    const found = [];
    let node = walker.nextNode();
    while (node) {
        if (node.shadowRoot) found.push(node.shadowRoot);
        node = walker.nextNode();
    }
    return found;
}
"""

FRAME_ELEMENTS = """
(root) => Array.from(root.querySelectorAll('iframe, frame'))
"""

IS_RENDERED = """
(el) => {
    const view = el.ownerDocument.defaultView || window;
    const style = view.getComputedStyle(el);
    if (style.display === 'none') return false;
    if (style.visibility === 'hidden' || style.visibility === 'collapse') return false;
    const opacity = parseFloat(style.opacity);
    return isNaN(opacity) || opacity > 0;
}
"""

# -- Interaction -----------------------------------------------------------

PREPARE_TARGET = """
(el) => {
    try { el.scrollIntoView({block: 'center', inline: 'center'}); } catch (e) {}
    if (typeof el.focus === 'function') el.focus();
    const r = el.getBoundingClientRect();
    return {x: r.left + r.width / 2, y: r.top + r.height / 2,
            width: r.width, height: r.height};
}
"""

CHECKED_STATE = """
(el) => {
    if (el.type === 'checkbox' || el.type === 'radio') return !!el.checked;
    if (el.hasAttribute && el.hasAttribute('aria-checked')) {
        return el.getAttribute('aria-checked') === 'true';
    }
    const inner = el.querySelector
        ? el.querySelector('input[type="checkbox"], [aria-checked]') : null;
    const outer = el.closest ? el.closest('[aria-checked]') : null;
    const host = inner || outer;
    if (!host) return null;
    if (host.type === 'checkbox') return !!host.checked;
    return host.getAttribute('aria-checked') === 'true';
}
"""

_DISPATCH_BODY = """
    const view = el.ownerDocument.defaultView || window;
    const init = {
        bubbles: true, cancelable: true, composed: true, view: view,
        clientX: step.x, clientY: step.y,
        screenX: step.x + (view.screenX || 0),
        screenY: step.y + (view.screenY || 0),
        button: 0,
        buttons: step.type.endsWith('down') ? 1 : 0,
    };
    switch (step.kind) {
        case 'pointer':
            el.dispatchEvent(new view.PointerEvent(step.type, Object.assign({
                pointerId: 1, pointerType: 'mouse', isPrimary: true,
            }, init)));
            break;
        case 'mouse':
            el.dispatchEvent(new view.MouseEvent(step.type, init));
            break;
        case 'focus':
            if (typeof el.focus === 'function') el.focus();
            el.dispatchEvent(new view.FocusEvent('focus', {view: view}));
            break;
        case 'key':
            el.dispatchEvent(new view.KeyboardEvent(step.type, {
                key: step.key, bubbles: true, cancelable: true,
            }));
            break;
        case 'input':
            el.value = (el.value || '') + step.key;
            el.dispatchEvent(new view.InputEvent('input', {
                data: step.key, inputType: 'insertText', bubbles: true,
            }));
            break;
        case 'change':
            el.dispatchEvent(new view.Event('change', {bubbles: true}));
            break;
        default:
            return false;
    }
    return true;
"""

DISPATCH_EVENT = "(el, step) => {" + _DISPATCH_BODY + "}"

DISPATCH_AT_POINT = (
    "(step) => {\n"
    "    const el = document.elementFromPoint(step.x, step.y);\n"
    "    if (!el) return false;\n"
    + _DISPATCH_BODY
    + "}"
)

FALLBACK_CLICK = """
(el, strategy) => {
    let target = el;
    if (strategy === 'label') {
        target = el.closest('label');
    } else if (strategy === 'container') {
        target = el.parentElement ? el.parentElement.closest('div, span') : null;
    }
    if (!target || typeof target.click !== 'function') return false;
    target.click();
    return true;
}
"""

CLEAR_INPUT = """
(el) => {
    if (typeof el.focus === 'function') el.focus();
    el.value = '';
}
"""

# -- Solved-state probes ---------------------------------------------------

TURNSTILE_TOKEN = """
() => {
    const input = document.querySelector('input[name="cf-turnstile-response"]')
        || document.querySelector('input[name="g-recaptcha-response"]');
    if (input && input.value && input.value.length > 10) return input.value;
    if (window.turnstileToken && window.turnstileToken.length > 10) {
        return window.turnstileToken;
    }
    return null;
}
"""

FRAME_SUCCESS = """
() => document.querySelector('[aria-checked="true"]') !== null
    || document.querySelector('input[checked]') !== null
    || (document.body !== null && (document.body.classList.contains('success')
        || document.body.classList.contains('verified')))
"""
